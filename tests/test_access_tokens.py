from app.services.access_tokens import new_access_token, tokens_match


def test_tokens_are_unique_and_url_safe():
    tokens = {new_access_token() for _ in range(200)}
    assert len(tokens) == 200
    assert all(len(t) >= 43 and all(c.isalnum() or c in "-_" for c in t) for t in tokens)


def test_tokens_match_is_exact():
    t = new_access_token()
    assert tokens_match(t, t)
    assert not tokens_match(t, t[:-1])
    assert not tokens_match(t, "")
    assert not tokens_match(t, None)

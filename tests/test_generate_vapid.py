import base64

from scripts.generate_vapid import env_lines, generate_vapid_keys


def _decode(value):
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def test_generated_keys_are_raw_p256():
    keys = generate_vapid_keys()
    public = _decode(keys["public_key"])
    assert len(public) == 65
    assert public[0] == 4
    assert len(_decode(keys["private_key"])) == 32


def test_env_lines():
    lines = env_lines({"public_key": "pub", "private_key": "priv"}, "ops@example.com")
    assert lines == [
        "VAPID_PUBLIC_KEY=pub",
        "VAPID_PRIVATE_KEY=priv",
        "VAPID_SUBJECT=ops@example.com",
    ]

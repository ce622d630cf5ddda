"""
Generate the VAPID key pair used to sign reminder pushes. Run:
    python scripts/generate_vapid.py --subject you@example.com
and paste the printed lines into your .env.
"""
import argparse
import base64

from cryptography.hazmat.primitives.asymmetric import ec


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("utf-8")


def generate_vapid_keys():
    # VAPID keys live on the P-256 curve
    private_key = ec.generate_private_key(ec.SECP256R1())
    private_bytes = private_key.private_numbers().private_value.to_bytes(32, "big")

    public_numbers = private_key.public_key().public_numbers()
    public_bytes = b"\x04" + public_numbers.x.to_bytes(32, "big") + public_numbers.y.to_bytes(32, "big")

    return {
        "public_key": b64url(public_bytes),
        "private_key": b64url(private_bytes),
    }


def env_lines(keys, subject):
    return [
        f"VAPID_PUBLIC_KEY={keys['public_key']}",
        f"VAPID_PRIVATE_KEY={keys['private_key']}",
        f"VAPID_SUBJECT={subject}",
    ]


def main():
    parser = argparse.ArgumentParser(description="Generate VAPID keys for reminder push delivery.")
    parser.add_argument("--subject", default="admin@example.com", help="Contact email for push services")
    args = parser.parse_args()

    for line in env_lines(generate_vapid_keys(), args.subject):
        print(line)


if __name__ == "__main__":
    main()

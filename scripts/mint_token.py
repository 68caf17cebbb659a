# scripts/mint_token.py
import os  # read environment variables
import argparse  # parse CLI args

from recovery_api.security import mint_access_token  # same signing code the API verifies with


def main() -> None:  # main entrypoint
    parser = argparse.ArgumentParser(description="Mint a bearer token for local API calls")  # CLI parser
    parser.add_argument("--email", required=True)  # caller identity
    parser.add_argument("--role", choices=["admin", "user"], default="user")  # caller role
    parser.add_argument("--ttl-minutes", type=int, default=60)  # token lifetime
    args = parser.parse_args()  # parse args

    secret = os.environ.get("AUTH_TOKEN_SECRET", "dev_secret_change_me")  # signing secret
    token = mint_access_token(args.email, args.role, secret, ttl_minutes=args.ttl_minutes)  # sign token
    print(token)  # output token to stdout


if __name__ == "__main__":  # run as script
    main()  # call main

# scripts/mint_token.py
import os  # read environment variables
import argparse  # parse CLI args

from giftcodes.security import mint_admin_token  # sign an admin JWT

def main() -> None:  # main entrypoint
    parser = argparse.ArgumentParser(description="Mint a bearer token for /admin/gift-codes")  # CLI parser
    parser.add_argument("--sub", required=True)  # operator name embedded as subject
    parser.add_argument("--ttl-minutes", type=int, default=60)  # token lifetime
    args = parser.parse_args()  # parse args

    secret = os.environ.get("ADMIN_TOKEN_SECRET", "dev_secret_change_me")  # signing secret
    print(mint_admin_token(args.sub, secret, ttl_minutes=args.ttl_minutes))  # output token to stdout

if __name__ == "__main__":  # run as script
    main()  # call main

# scripts/generate_key.py
import argparse  # parse CLI args

from giftcodes.crypto import generate_key  # fresh 256-bit key, base64

def main() -> None:  # main entrypoint
    parser = argparse.ArgumentParser(description="Print a new gift code encryption key")  # CLI parser
    parser.add_argument("--ref", default=None)  # print "ref:key" for GIFT_CODE_KEYS when given
    args = parser.parse_args()  # parse args

    key = generate_key()  # new key
    print(f"{args.ref}:{key}" if args.ref else key)  # output to stdout

if __name__ == "__main__":  # run as script
    main()  # call main

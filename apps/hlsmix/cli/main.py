import sys

from hlsmix.cli.handlers import CliError, main as run_main


def main(argv=None):
    try:
        return run_main(argv)
    except CliError as exc:
        print("error:", exc, file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

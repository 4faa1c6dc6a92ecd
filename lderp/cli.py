"""lderp command line"""

import argparse
import importlib
import logging
import sys

from ldap3.utils.log import BASIC, set_library_log_detail_level
import yaml

from . import ConfigException, LderpException
from .config_reader import ConfigReader


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(prog="lderp")
    parser.add_argument(
        "-c",
        "--configcheck",
        action="store_true",
        help="Parse the config files, replace environment variables, display and exit.",
    )
    parser.add_argument(
        "-r",
        "--configraw",
        action="store_true",
        help="When performing a config check, do not parse environment variables.",
    )
    parser.add_argument(
        "-f",
        "--file",
        help="config file location.  Either a single file or a folder of yaml files.",
        default="config/",
    )
    parser.add_argument(
        "-d",
        "--debug",
        help="enable debug mode",
        action="store_true",
    )

    commands = parser.add_subparsers(dest="command")
    commands.add_parser("status", help="Check the zombie credential can bind.")

    find = commands.add_parser("find", help="Search for users by attribute.")
    find.add_argument("where", nargs="*", metavar="KEY=VALUE")
    find.add_argument("--filter", help="Use a raw LDAP filter instead.")

    find_user = commands.add_parser("find-user", help="Look up a single user.")
    find_user.add_argument("username")

    name = commands.add_parser("name", help="Show a user's first and last name.")
    name.add_argument("username")

    emailless = commands.add_parser(
        "emailless", help="List entries starting with a prefix that have no @ in cn."
    )
    emailless.add_argument("prefix")

    return parser.parse_args(argv)


def parse_where(pairs):
    """Turn KEY=VALUE arguments into a dict"""
    where = {}
    for pair in pairs:
        key, separator, value = pair.partition("=")
        if not separator or not key:
            raise ValueError(f"Expected KEY=VALUE, got '{pair}'")
        where[key] = value
    return where


def load_adapter(config: ConfigReader):
    """Instantiate the adapter named by the config's directory.module"""
    if "directory" not in config.config:
        logging.error("Directory config missing")
        sys.exit(1)

    module = config.config.directory.module
    if not isinstance(module, str):
        logging.error("Given directory module name isn't a string")
        sys.exit(1)
    try:
        adapter_mod = importlib.import_module(f"lderp.adapter_{module.lower()}")
    except ModuleNotFoundError:
        logging.error("No module found for directory '%s'", module)
        sys.exit(1)
    # pylint: disable-msg=invalid-name
    Adapter = getattr(adapter_mod, f"{module}Adapter")
    return Adapter(config.adapter_config())


def run_command(adapter, args):
    """Run one command against adapter and return something printable"""
    if args.command == "status":
        return adapter.check_status()
    if args.command == "find":
        where = {"filter": args.filter} if args.filter else parse_where(args.where)
        return [entry.to_dict() for entry in adapter.find(where)]
    if args.command == "find-user":
        entry = adapter.find_user(args.username)
        return entry.to_dict() if entry is not None else None
    if args.command == "name":
        return adapter.get_personal_name_by_username(args.username)
    if args.command == "emailless":
        if not hasattr(adapter, "find_all_email_addressless"):
            raise LderpException(f"'{adapter.name}' can't search for emailless users")
        return [
            entry.to_dict() for entry in adapter.find_all_email_addressless(args.prefix)
        ]
    raise LderpException(f"Unknown command '{args.command}'")


def main(argv=None):
    """Entry point for the lderp cli"""
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    if args.debug:
        set_library_log_detail_level(BASIC)

    try:
        config = ConfigReader(args.file, args.configraw)
    except ConfigException as exc:
        logging.error("%s", exc)
        sys.exit(1)

    if args.configcheck:
        if args.configraw:
            logging.info("Raw config check requested.  Config is:\n")
        else:
            logging.info("Config check requested.  Config is:\n")
        print(config.dump(raw=args.configraw))
        sys.exit(0)

    if not args.command:
        logging.error("No command given")
        sys.exit(1)

    adapter = load_adapter(config)
    try:
        if args.command != "status" and adapter.zombie.username:
            adapter.bind_as_zombie()
        output = run_command(adapter, args)
    except (LderpException, ValueError) as exc:
        logging.error("%s", exc)
        sys.exit(1)
    finally:
        adapter.destroy()

    print(yaml.safe_dump(output, default_flow_style=False, sort_keys=False))


if __name__ == "__main__":
    main()

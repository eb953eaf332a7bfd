#!/usr/bin/env python3

# Python Client for VMware NSX-T Manager

################################################################################
### Copyright (C) 2019-2022 VMware, Inc.  All rights reserved.
### SPDX-License-Identifier: BSD-2-Clause
################################################################################


"""

Welcome to pyNSXT !

Create, update and show NSX-T inventory groups and gateways by name.
Objects are looked up by display name; a matching object is left alone,
a missing one is created, and a different one is reported as a conflict
unless --force is given. --dry-run reports what would happen without
changing anything.

NSX-T Policy API documentation is available at: https://developer.vmware.com/apis/nsx-t

You can install the dependent python packages with:
pip3 install -e .

"""
import argparse
import sys
from pynsxt_fxns import *
from pynsxt_session import ConnectionRegistry
from pynsxt_specs import CONDITION_KEYS, CONDITION_OPERATORS, FAILOVER_MODES, GROUP_TYPES, HA_MODES, ROUTE_ADVERTISEMENT_TYPES


# --------------------------------------------
# ---------------- Main ----------------------
# --------------------------------------------
def build_parser():

    from argparse import SUPPRESS

    class MyFormatter(argparse.RawDescriptionHelpFormatter):
        def __init__(self,prog):
            super(MyFormatter, self).__init__(prog,max_help_position=40)
    # this is the top level parser
    ap = argparse.ArgumentParser(formatter_class=MyFormatter, usage=SUPPRESS,
                                    epilog="Welcome to pyNSXT!\n\n"
                                    "Examples:\n\n"
                                    "Show the inventory groups of the default domain:\n"
                                    "./pyNSXT.py group show\n\n"
                                    "Create a group of web servers, or check that it already matches:\n"
                                    "./pyNSXT.py group new web-servers --type criteria-based --key Name --operator STARTSWITH --filter-value web\n\n"
                                    "Preview a batch of changes:\n"
                                    "./pyNSXT.py apply desired.json --dry-run \n   \n")
    ap.add_argument('--config', dest='config_file', default=CONFIG_FILE, help='Path to config.ini (default ./config.ini).')
    ap.add_argument('-v', '--verbose', action='store_true', help='Print diagnostic output to stderr.')
    ap.add_argument('--log-file', help='Append diagnostic output to this file.')

    # create a subparser for the subsequent sections
    subparsers = ap.add_subparsers(help='sub-command help')

# ============================
# GLOBAL Parsers
# ============================
    """Parser to be used as parent for every command that talks to an NSX-T Manager.
    Commands built without it run without a session (config commands)."""
    server_flag = argparse.ArgumentParser(add_help=False)
    server_flag.add_argument('-s', '--server', help='Server name from the server lookup file, or an NSX-T Manager FQDN/IP.')
    server_flag.add_argument('--non-interactive', action='store_true', help='Fail instead of prompting for a server choice or credentials.')

    """Parser to be used as parent for every command that creates or updates objects."""
    apply_flag = argparse.ArgumentParser(add_help=False)
    apply_flag.add_argument('-f', '--force', action='store_true', help='Replace an existing object whose parameters differ.')
    apply_flag.add_argument('--dry-run', action='store_true', help='Report what would be done without changing anything.')
    apply_flag.add_argument('--strict-names', action='store_true', help='Fail when more than one object carries the same name.')

    tag_flag = argparse.ArgumentParser(add_help=False)
    tag_flag.add_argument('--description', help='Description of the object.')
    tag_flag.add_argument('--tag', action='append', help='Tag as scope=value (repeatable).')

# ============================
# pyNSXT Config
# ============================

    config_parser=subparsers.add_parser('config', formatter_class=MyFormatter, help='Commands related to the configuration of pyNSXT.')
    config_parser_subs = config_parser.add_subparsers(help='config sub-command help')

    config_build_parser = config_parser_subs.add_parser('build', help = "Build a new config.ini.")
    config_build_parser.set_defaults(func = build_initial_config)

    config_show_parser = config_parser_subs.add_parser('show', help = "Show the current configuration of pyNSXT.")
    config_show_parser.set_defaults(func = show_config)

# ============================
# Connection
# ============================

    connect_parser = subparsers.add_parser('connect', parents=[server_flag], help='Authenticate to an NSX-T Manager and show its version.')
    connect_parser.set_defaults(func = show_connection)

# ============================
# NSX-T - Inventory Groups
# ============================

    group_parser = subparsers.add_parser('group', help='Create, update and show inventory groups.')
    group_parser_subs = group_parser.add_subparsers(help='group sub-command help')

    new_group_parser = group_parser_subs.add_parser('new', parents=[server_flag, apply_flag, tag_flag], help = 'create a group, or check an existing one')
    new_group_parser.add_argument("objectname", help= "The display name of the group.")
    new_group_parser.add_argument("--domain", help = "The policy domain of the group (default from config.ini, else 'default').")
    new_group_parser.add_argument("--type", choices=GROUP_TYPES, required = True, help = '''
    The type of membership to assign to the group: ip-based, member-based, criteria-based, or group-based.
    Criteria-based membership is limited to VM attributes - "Name", "Tag", "OSName", "ComputerName".
    Tag-based criteria may not use "NOTEQUALS".
    ''')
    new_group_parser.add_argument("--members", nargs = '+', help = '''
    A list of the members you would like added to the group.
    This may be a list of IP addresses, groups by ID, or virtual machines by NSX External ID.
    ''')
    new_group_parser.add_argument("--key", choices= CONDITION_KEYS, help = "Criteria filter for adding virtual machines.")
    new_group_parser.add_argument("--operator", choices = CONDITION_OPERATORS, type = str.upper, help = "Operator used for criteria filters.")
    new_group_parser.add_argument("--filter-value", help = "String containing the value to filter on for criteria-based membership.")
    new_group_parser.set_defaults(func = new_group)

    show_group_parser = group_parser_subs.add_parser('show', parents=[server_flag], help = 'show existing groups')
    show_group_parser.add_argument("-n", "--objectname", help= "The name of the group to show criteria for.")
    show_group_parser.add_argument("--domain", help = "The policy domain to list (default from config.ini, else 'default').")
    show_group_parser.add_argument('--strict-names', action='store_true', help='Fail when more than one group carries the name.')
    show_group_parser.set_defaults(func = show_groups)

# ============================
# NSX-T - Gateways
# ============================

    gateway_parser = subparsers.add_parser('gateway', help='Create, update and show tier-0 and tier-1 gateways.')
    gateway_parser_subs = gateway_parser.add_subparsers(help='gateway sub-command help')

    new_gateway_parser = gateway_parser_subs.add_parser('new', parents=[server_flag, apply_flag, tag_flag], help = 'create a gateway, or check an existing one')
    new_gateway_parser.add_argument("objectname", help= "The display name of the gateway.")
    new_gateway_parser.add_argument("-t", "--tier", choices=["t0", "t1"], type=str.lower, required=True, help="The gateway tier.")
    new_gateway_parser.add_argument("--ha-mode", choices=HA_MODES, type=str.upper, help="Tier-0 only: high availability mode (default ACTIVE_ACTIVE).")
    new_gateway_parser.add_argument("--failover-mode", choices=FAILOVER_MODES, type=str.upper, help="Failover mode (default NON_PREEMPTIVE).")
    new_gateway_parser.add_argument("--tier0", help="Tier-1 only: the tier-0 gateway (name or policy path) to link to.")
    new_gateway_parser.add_argument("--advertise", nargs='+', choices=ROUTE_ADVERTISEMENT_TYPES, type=str.upper, help="Tier-1 only: route advertisement types.")
    new_gateway_parser.set_defaults(func = new_gateway)

    show_gateway_parser = gateway_parser_subs.add_parser('show', parents=[server_flag], help = 'show existing gateways')
    show_gateway_parser.add_argument("-t", "--tier", choices=["t0", "t1", "both"], type=str.lower, default="both", help="The gateway tier(s) to show.")
    show_gateway_parser.add_argument("-n", "--objectname", help= "The name of a single gateway to show.")
    show_gateway_parser.add_argument('--strict-names', action='store_true', help='Fail when more than one gateway carries the name.')
    show_gateway_parser.set_defaults(func = show_gateways)

# ============================
# Desired-state files
# ============================

    apply_parser = subparsers.add_parser('apply', parents=[server_flag, apply_flag], help='Reconcile every object in a desired-state JSON file.')
    apply_parser.add_argument("filename", help="JSON file holding a list of objects, each with a 'kind' of group, tier0 or tier1.")
    apply_parser.add_argument("--report", help="Write the per-object results to this CSV file.")
    apply_parser.set_defaults(func = apply_file)

    return ap


def main(argv=None, session_factory=Session):

    ap = build_parser()

# ============================
# Parsing arguments and calling function(s)
# ============================
    # argparse exits with 2 on bad arguments; 2 is reserved for Conflict
    try:
        args = ap.parse_args(argv)
    except SystemExit as e:
        return EXIT_ERROR if e.code else EXIT_OK

    # If no arguments given, or no subcommands given with a function defined, return help:
    if 'func' not in args:
        ap.print_help(sys.stderr)
        return 0

    setup_logging(args.verbose, args.log_file)

    # Build dictionary to pass to later functions
    params = vars(args)

    # Commands without the server flag do not need a connection
    if 'server' not in args:
        return args.func(**params)

# ============================
# Call function to retrieve parameters in config.ini
# ============================
    try:
        config_params = read_config(args.config_file)
    except InvalidArgument as e:
        print(e)
        return 1

    prompter = make_prompter(args.non_interactive or config_params['non_interactive'])
    registry = ConnectionRegistry()
    try:
        session = open_session(args.server, config_params, prompter, registry=registry, session_factory=session_factory)
    except NsxtError as e:
        print(f"Unable to connect: {e}")
        return 1

    params.update({"session": session})
    if not params.get('domain'):
        params['domain'] = config_params['domain']

    # Call the appropriate function with the dictionary containing the arguments.
    try:
        return args.func(**params)
    finally:
        registry.close_all()


if __name__ == "__main__":
    sys.exit(main())

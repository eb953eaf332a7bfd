# Python Client for VMware NSX-T Manager

################################################################################
### Copyright (C) 2019-2022 VMware, Inc.  All rights reserved.
### SPDX-License-Identifier: BSD-2-Clause
################################################################################

import configparser                     # parsing config file
import logging
import sys
from dataclasses import replace
from os.path import exists

import pandas as pd
from prettytable import PrettyTable

from pynsxt_errors import InvalidArgument, NsxtError
from pynsxt_reconcile import Action, ApplyOptions, apply, apply_all, find_by_name
from pynsxt_session import (
    CredentialChain,
    EnvCredentialProvider,
    PromptCredentialProvider,
    Prompter,
    Session,
    StaticCredentialProvider,
    load_servers,
    resolve_server,
)
from pynsxt_specs import (
    KIND_GROUP,
    KIND_TIER0,
    KIND_TIER1,
    GroupSpec,
    Tier0GatewaySpec,
    Tier1GatewaySpec,
    load_desired_file,
)

logger = logging.getLogger(__name__)

CONFIG_FILE = "./config.ini"
CONFIG_SECTION = "nsxtConfig"

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFLICT = 2

EXIT_CODES = {
    Action.FOUND: EXIT_OK,
    Action.CREATED: EXIT_OK,
    Action.UPDATED: EXIT_OK,
    Action.DRY_RUN: EXIT_OK,
    Action.CONFLICT: EXIT_CONFLICT,
    Action.ERROR: EXIT_ERROR,
}

TIER_KINDS = {"t0": KIND_TIER0, "t1": KIND_TIER1}


# ============================
# Logging
# ============================

def setup_logging(verbose=False, log_file=None):
    """Diagnostics go to stderr (DEBUG with --verbose, WARNING otherwise) and optionally to a log file."""
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    handlers = [console]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG if verbose or log_file else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )


# ============================
# Read CONFIG.INI file
# ============================

def read_config(path=CONFIG_FILE):
    """Returns the [nsxtConfig] settings with defaults filled in. A missing file yields the defaults."""
    config_params = {
        "server_file": "./servers.json",
        "default_server": "",
        "username": "",
        "password": "",
        "verify_ssl": False,
        "domain": "default",
        "retries": 3,
        "timeout": 30,
        "non_interactive": False,
    }
    if not exists(path):
        logger.debug("%s not found, using defaults", path)
        return config_params

    config = configparser.ConfigParser()
    try:
        config.read(path)
        if not config.has_section(CONFIG_SECTION):
            raise InvalidArgument(f"{path} has no [{CONFIG_SECTION}] section.")
        for key in ("server_file", "default_server", "username", "password", "domain"):
            if config.has_option(CONFIG_SECTION, key):
                config_params[key] = config.get(CONFIG_SECTION, key)
        for key in ("verify_ssl", "non_interactive"):
            if config.has_option(CONFIG_SECTION, key):
                config_params[key] = config.getboolean(CONFIG_SECTION, key)
        for key in ("retries", "timeout"):
            if config.has_option(CONFIG_SECTION, key):
                config_params[key] = config.getint(CONFIG_SECTION, key)
    except (configparser.Error, ValueError) as e:
        raise InvalidArgument(f"There are problems with your {path} file: {e}")
    return config_params


def build_initial_config(**kwargs):
    path = kwargs.get('config_file') or CONFIG_FILE
    config = configparser.ConfigParser()
    config[CONFIG_SECTION] = {
        'server_file': './servers.json',
        'default_server': '',
        'username': '',
        'password': '',
        'verify_ssl': 'false',
        'domain': 'default',
        'retries': '3',
        'timeout': '30',
        'non_interactive': 'false',
        }

    config[CONFIG_SECTION]['default_server'] = input('Please enter the NSX-T Manager name or FQDN:')
    config[CONFIG_SECTION]['username'] = input('Please enter your NSX-T username (leave blank to be prompted):')

    with open(path, 'w') as configfile:
        config.write(configfile)
    print()
    print(f"{path} has been written. The password is left blank; set it there, in NSXT_PASSWORD, or enter it when prompted.")
    return EXIT_OK


def show_config(**kwargs):
    path = kwargs.get('config_file') or CONFIG_FILE
    if not exists(path):
        print(f'{path} is missing - use "./pyNSXT.py config build" or copy config.ini.example.')
        return EXIT_ERROR
    try:
        config_params = read_config(path)
    except InvalidArgument as e:
        print(f"Error: {e}")
        return EXIT_ERROR
    table = PrettyTable(['Setting', 'Value'])
    for k, v in config_params.items():
        if k == 'password' and v:
            v = '********'
        table.add_row([k, v])
    print(f"Content of {path}:")
    print(table)
    return EXIT_OK


# ============================
# Connections
# ============================

def open_session(server, config_params, prompter, registry=None, session_factory=Session):
    """Resolves the server and its credentials, connects, and records the session in the caller's registry."""
    servers = load_servers(config_params['server_file'])
    name, entry = resolve_server(server or config_params['default_server'] or None, servers, prompter)
    chain = CredentialChain([
        StaticCredentialProvider(entry.get('username') or config_params['username'] or None,
                                 entry.get('password') or config_params['password'] or None),
        EnvCredentialProvider(),
        PromptCredentialProvider(prompter),
    ])
    username, password = chain.get(name)
    session = session_factory(
        entry['host'],
        username,
        password,
        verify_ssl=entry.get('verify_ssl', config_params['verify_ssl']),
        retries=config_params['retries'],
        timeout=config_params['timeout'],
    )
    session.connect()
    if registry is not None:
        registry.add(name, session)
    return session


def show_connection(**kwargs):
    """Shows the NSX-T Manager the session is connected to"""
    session = kwargs['session']
    table = PrettyTable(['Server', 'User', 'Version'])
    table.add_row([session.base_url, session.username, session.version])
    print(table)
    return EXIT_OK


# ============================
# Outcomes
# ============================

def apply_options(kwargs):
    return ApplyOptions(
        force=bool(kwargs.get('force')),
        dry_run=bool(kwargs.get('dry_run')),
        strict_names=bool(kwargs.get('strict_names')),
    )


def outcome_exit_code(outcome):
    return EXIT_CODES[outcome.action]


def worst_exit_code(outcomes):
    codes = [outcome_exit_code(o) for o in outcomes]
    if EXIT_ERROR in codes:
        return EXIT_ERROR
    if EXIT_CONFLICT in codes:
        return EXIT_CONFLICT
    return EXIT_OK


def print_outcome(kind, name, outcome):
    table = PrettyTable(['Kind', 'Name', 'Action', 'ID', 'Message'])
    table.add_row([kind, name, outcome.action.value, outcome.remote_id or "", outcome.message])
    print(table)
    if outcome.resource_url and outcome.action in (Action.CREATED, Action.UPDATED):
        print(f"Resource: {outcome.resource_url}")
    if outcome.action == Action.CONFLICT:
        print("Use --force to replace the existing object with the requested parameters.")


def _reconcile_one(spec, collection_kind, kwargs):
    session = kwargs['session']
    domain = kwargs.get('domain') or 'default'
    try:
        collection = session.get_collection(collection_kind, domain)
        outcome = apply(spec, collection, apply_options(kwargs))
    except NsxtError as e:
        print(f"Error: {e}")
        return EXIT_ERROR
    print_outcome(collection_kind, spec.name, outcome)
    return outcome_exit_code(outcome)


# ============================
# NSX-T - Inventory Groups
# ============================

def new_group(**kwargs):
    """Creates an inventory group, or reports whether an existing group with the same name matches"""
    try:
        spec = GroupSpec.from_membership(
            kwargs['objectname'],
            kwargs['type'],
            members=kwargs.get('members'),
            key=kwargs.get('key'),
            operator=kwargs.get('operator'),
            filter_value=kwargs.get('filter_value'),
            domain=kwargs.get('domain') or 'default',
            description=kwargs.get('description') or "",
            tags=kwargs.get('tag') or (),
        )
    except InvalidArgument as e:
        print(f"Error: {e}")
        return EXIT_ERROR
    return _reconcile_one(spec, KIND_GROUP, kwargs)


def show_groups(**kwargs):
    """Shows the groups of a domain, or the criteria of a single group when a name is given"""
    session = kwargs['session']
    domain = kwargs.get('domain') or 'default'
    name = kwargs.get('objectname')
    try:
        collection = session.get_collection(KIND_GROUP, domain)
        if name is None:
            groups = collection.list()
        else:
            group = find_by_name(name, collection, strict=bool(kwargs.get('strict_names')))
    except NsxtError as e:
        print(f"Error: {e}")
        return EXIT_ERROR

    if name is None:
        table = PrettyTable(['ID', 'Name', 'Description', 'Clauses'])
        for g in groups:
            table.add_row([g.remote_id, g.name, g.description, len(g.fields['expression'])])
        print(f'Here are the groups in domain {domain}:')
        print(table)
        return EXIT_OK

    if group is None:
        print(f'Group {name} does not exist in domain {domain}.')
        return EXIT_ERROR

    print(f'Group {group.name} ({group.remote_id})')
    if group.description:
        print(group.description)
    expression = group.fields['expression']
    if not expression:
        print("This group has no criteria defined.")
        return EXIT_OK
    table = PrettyTable(['Type', 'Member Type', 'Key', 'Operator', 'Value'])
    for clause in expression:
        match clause['resource_type']:
            case 'Condition':
                table.add_row(['Condition', clause['member_type'], clause['key'], clause['operator'], clause['value']])
            case 'ConjunctionOperator':
                table.add_row(['Conjunction', "", "", "", clause['conjunction_operator']])
            case 'IPAddressExpression':
                table.add_row(['IP Addresses', "", "", "", ", ".join(clause['ip_addresses'])])
            case 'MACAddressExpression':
                table.add_row(['MAC Addresses', "", "", "", ", ".join(clause['mac_addresses'])])
            case 'PathExpression':
                table.add_row(['Paths', "", "", "", ", ".join(clause['paths'])])
            case 'ExternalIDExpression':
                table.add_row(['External IDs', clause['member_type'], "", "", ", ".join(clause['external_ids'])])
            case _:
                table.add_row([clause['resource_type'], "", "", "", ""])
    print(table)
    if group.tags:
        print("Tags: " + ", ".join(f"{t.scope}={t.tag}" if t.scope else t.tag for t in group.tags))
    return EXIT_OK


# ============================
# NSX-T - Gateways
# ============================

def link_tier0(session, spec, strict=False):
    """Points a tier-1 spec that names its tier-0 by display name at that gateway's policy path.

    With strict=True, a tier-0 name carried by several gateways raises AmbiguousName.
    """
    if spec.kind != KIND_TIER1 or not isinstance(spec.tier0_path, str) or not spec.tier0_path or spec.tier0_path.startswith("/"):
        return spec
    tier0 = find_by_name(spec.tier0_path, session.get_collection(KIND_TIER0), strict=strict)
    if tier0 is None:
        logger.debug("No tier-0 named %s; treating it as an id", spec.tier0_path)
        return spec
    return replace(spec, tier0_path=tier0.raw.get('path') or f"/infra/tier-0s/{tier0.remote_id}")


def new_gateway(**kwargs):
    """Creates a tier-0 or tier-1 gateway, or reports whether an existing gateway with the same name matches"""
    tier = kwargs['tier']
    try:
        if tier == 't0':
            spec = Tier0GatewaySpec(
                kwargs['objectname'],
                description=kwargs.get('description') or "",
                ha_mode=kwargs.get('ha_mode') or "ACTIVE_ACTIVE",
                failover_mode=kwargs.get('failover_mode') or "NON_PREEMPTIVE",
                tags=kwargs.get('tag') or (),
            )
        else:
            spec = Tier1GatewaySpec(
                kwargs['objectname'],
                description=kwargs.get('description') or "",
                failover_mode=kwargs.get('failover_mode') or "NON_PREEMPTIVE",
                tier0_path=kwargs.get('tier0'),
                route_advertisement_types=kwargs.get('advertise') or (),
                tags=kwargs.get('tag') or (),
            )
    except InvalidArgument as e:
        print(f"Error: {e}")
        return EXIT_ERROR
    if tier == 't1':
        try:
            spec = link_tier0(kwargs['session'], spec, strict=bool(kwargs.get('strict_names')))
        except NsxtError as e:
            print(f"Error: {e}")
            return EXIT_ERROR
    return _reconcile_one(spec, TIER_KINDS[tier], kwargs)


def show_gateways(**kwargs):
    """Shows tier-0 and/or tier-1 gateways"""
    session = kwargs['session']
    tier = kwargs.get('tier') or 'both'
    name = kwargs.get('objectname')
    tiers = ['t0', 't1'] if tier == 'both' else [tier]

    table = PrettyTable(['Tier', 'Name', 'ID', 'HA Mode', 'Failover Mode', 'Linked Tier-0'])
    found = 0
    for t in tiers:
        try:
            collection = session.get_collection(TIER_KINDS[t])
            if name is None:
                gateways = collection.list()
            else:
                gw = find_by_name(name, collection, strict=bool(kwargs.get('strict_names')))
                gateways = [gw] if gw is not None else []
        except NsxtError as e:
            print(f"Error: {e}")
            return EXIT_ERROR
        for gw in gateways:
            fields = gw.fields
            table.add_row([t.upper(), gw.name, gw.remote_id, fields.get('ha_mode', "-"), fields['failover_mode'],
                           fields.get('tier0_path') or "-"])
            found += 1

    if name is not None and not found:
        print(f'Gateway {name} does not exist.')
        return EXIT_ERROR
    print(table)
    return EXIT_OK


# ============================
# Desired-state files
# ============================

def apply_file(**kwargs):
    """Reconciles every object in a desired-state JSON file and prints a summary"""
    session = kwargs['session']
    try:
        specs = load_desired_file(kwargs['filename'], default_domain=kwargs.get('domain') or 'default')
    except InvalidArgument as e:
        print(f"Error: {e}")
        return EXIT_ERROR
    if not specs:
        print(f"No objects found in {kwargs['filename']}.")
        return EXIT_OK

    collections = {}

    def collection_for(spec):
        scope = (spec.kind, getattr(spec, 'domain', 'default'))
        if scope not in collections:
            collections[scope] = session.get_collection(*scope)
        return collections[scope]

    options = apply_options(kwargs)
    if options.dry_run:
        print('Dry run - no objects will be created or updated.')
    print(f"Reconciling {len(specs)} objects from {kwargs['filename']}...")
    results = apply_all(specs, collection_for, options, prepare=lambda spec: link_tier0(session, spec, strict=options.strict_names))

    df = pd.DataFrame(
        [{
            'kind': spec.kind,
            'name': spec.name,
            'action': outcome.action.value,
            'remote_id': outcome.remote_id or "",
            'message': outcome.message,
        } for spec, outcome in results]
    )
    print(df.to_string(index=False))
    print()
    print(df['action'].value_counts().to_string())

    report = kwargs.get('report')
    if report:
        df.to_csv(report, index=False)
        print(f"Report written to {report}")
    return worst_exit_code([outcome for _, outcome in results])


def make_prompter(non_interactive):
    return Prompter(interactive=not non_interactive and sys.stdin.isatty())

# Authentication and connection handling for pyNSXT

################################################################################
### Copyright (C) 2019-2022 VMware, Inc.  All rights reserved.
### SPDX-License-Identifier: BSD-2-Clause
################################################################################

import getpass
import json
import logging
import os
from os.path import exists

import requests
import urllib3
from requests.adapters import HTTPAdapter
from requests.auth import HTTPBasicAuth
from urllib3.util.retry import Retry

from pynsxt_errors import CredentialsUnavailable, InvalidArgument, NotAvailable, TransportError
from pynsxt_nsx import COLLECTION_PATHS, NsxCollection, nsx_error_handling
from pynsxt_specs import KIND_GROUP

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = (429, 502, 503, 504)


# ============================
# Session
# ============================

class Session:
    """An authenticated handle on one NSX-T Manager. Owns retry and timeout policy."""

    def __init__(self, host, username, password, verify_ssl=False, retries=3, backoff_factor=0.5, timeout=30):
        if not host:
            raise InvalidArgument("An NSX-T Manager host is required.")
        self.host = host
        self.base_url = host.rstrip("/") if host.startswith("https://") else f"https://{host.rstrip('/')}"
        self.username = username
        self.timeout = timeout
        self.version = None

        self.http = requests.Session()
        self.http.auth = HTTPBasicAuth(username, password)
        self.http.verify = verify_ssl
        self.http.headers.update({"Content-Type": "application/json", "Accept": "application/json"})
        retry = Retry(
            total=retries,
            backoff_factor=backoff_factor,
            status_forcelist=RETRY_STATUS_CODES,
            allowed_methods=None,
            raise_on_status=False,
        )
        self.http.mount("https://", HTTPAdapter(max_retries=retry))
        if not verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def __repr__(self):
        return f"Session({self.base_url!r}, user={self.username!r})"

    def request(self, method, path, **kwargs):
        kwargs.setdefault("timeout", self.timeout)
        logger.debug("%s %s%s", method, self.base_url, path)
        return self.http.request(method, f"{self.base_url}{path}", **kwargs)

    def connect(self):
        """Checks the credentials against the manager and records its version."""
        try:
            response = self.request("GET", "/api/v1/node/version")
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Unable to reach {self.base_url}: {e}")
        if response.status_code != 200:
            raise nsx_error_handling(response)
        try:
            json_response = response.json()
        except ValueError:
            raise TransportError(f"{self.base_url} returned a non-JSON version response.", status_code=response.status_code)
        self.version = json_response.get("product_version") or json_response.get("node_version")
        logger.info("Connected to %s as %s (NSX-T %s)", self.base_url, self.username, self.version)
        return self.version

    def get_collection(self, kind, domain="default"):
        """Returns the collection for a resource kind; groups live inside a policy domain."""
        if kind not in COLLECTION_PATHS:
            raise NotAvailable(f'Resource kind "{kind}" is not supported.')
        if kind == KIND_GROUP:
            try:
                response = self.request("GET", f"/policy/api/v1/infra/domains/{domain}")
            except requests.exceptions.RequestException as e:
                raise TransportError(f"Unable to reach {self.base_url}: {e}")
            if response.status_code == 404:
                raise NotAvailable(f'Domain "{domain}" does not exist on {self.host}.')
            if response.status_code != 200:
                raise nsx_error_handling(response)
        return NsxCollection(self, kind, domain)

    def close(self):
        self.http.close()


# ============================
# Prompting and credentials
# ============================

class Prompter:
    """Asks the operator for input. In non-interactive mode every question fails instead of blocking."""

    def __init__(self, interactive=True, input_fn=input, secret_fn=getpass.getpass):
        self.interactive = interactive
        self.input_fn = input_fn
        self.secret_fn = secret_fn

    def ask(self, question, secret=False):
        if not self.interactive:
            raise CredentialsUnavailable(f"Input required ({question.strip(': ')}) but running non-interactively.")
        return (self.secret_fn if secret else self.input_fn)(question)

    def choose(self, question, options):
        if not self.interactive:
            raise InvalidArgument(f"{question.strip(': ')}: a choice is required but running non-interactively.")
        for i, option in enumerate(options, start=1):
            print(f"  {i}) {option}")
        answer = self.input_fn(question).strip()
        if answer in options:
            return answer
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return options[int(answer) - 1]
        raise InvalidArgument(f'"{answer}" is not one of the listed choices.')


class StaticCredentialProvider:
    """Credentials from config.ini, the server lookup file or the command line."""

    def __init__(self, username=None, password=None):
        self.username = username
        self.password = password

    def get(self, server, username=None):
        return self.username or username, self.password


class EnvCredentialProvider:
    def __init__(self, environ=None):
        self.environ = os.environ if environ is None else environ

    def get(self, server, username=None):
        return username or self.environ.get("NSXT_USERNAME"), self.environ.get("NSXT_PASSWORD")


class PromptCredentialProvider:
    def __init__(self, prompter):
        self.prompter = prompter

    def get(self, server, username=None):
        if not username:
            username = self.prompter.ask(f"Username for {server}: ")
        password = self.prompter.ask(f"Password for {username}@{server}: ", secret=True)
        return username, password


class CredentialChain:
    """Tries each provider in turn. A username found by an earlier provider is handed to the later ones."""

    def __init__(self, providers):
        self.providers = list(providers)

    def get(self, server):
        username = None
        for provider in self.providers:
            found_user, password = provider.get(server, username)
            username = found_user or username
            if username and password:
                return username, password
        raise CredentialsUnavailable(f"No credentials available for {server}.")


# ============================
# Server lookup file
# ============================

def load_servers(path):
    """Reads the server lookup file: {"name": {"host": ..., "username": ..., "verify_ssl": ...}, ...}"""
    if not path or not exists(path):
        return {}
    with open(path, "r") as infile:
        try:
            json_data = json.load(infile)
        except json.JSONDecodeError as e:
            raise InvalidArgument(f"{path} is not valid JSON: {e}")
    if not isinstance(json_data, dict):
        raise InvalidArgument(f"{path} must hold an object keyed by server name.")
    servers = {}
    for name, entry in json_data.items():
        if isinstance(entry, str):
            entry = {"host": entry}
        if not entry.get("host"):
            raise InvalidArgument(f'Server "{name}" in {path} has no host.')
        servers[name] = entry
    return servers


def resolve_server(name, servers, prompter):
    """Returns (server name, entry) for a name, a raw host, or a choice among the known servers."""
    if name:
        if name in servers:
            return name, servers[name]
        return name, {"host": name}
    if len(servers) == 1:
        return next(iter(servers.items()))
    if not servers:
        raise InvalidArgument("No server given and no server lookup file entries; use --server.")
    choice = prompter.choose("Select an NSX-T Manager: ", sorted(servers))
    return choice, servers[choice]


# ============================
# Connection bookkeeping
# ============================

class ConnectionRegistry:
    """Open sessions by server name, owned by the caller."""

    def __init__(self):
        self._sessions = {}
        self._default = None

    def add(self, name, session, make_default=True):
        self._sessions[name] = session
        if make_default or self._default is None:
            self._default = name
        return session

    def get(self, name=None):
        if name is None:
            return self.default
        if name not in self._sessions:
            raise NotAvailable(f'No open connection to "{name}".')
        return self._sessions[name]

    def set_default(self, name):
        if name not in self._sessions:
            raise NotAvailable(f'No open connection to "{name}".')
        self._default = name

    @property
    def default(self):
        if self._default is None:
            raise NotAvailable("No open connection.")
        return self._sessions[self._default]

    def names(self):
        return list(self._sessions)

    def close_all(self):
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()
        self._default = None

# NSX-T policy API library for pyNSXT

################################################################################
### Copyright (C) 2019-2022 VMware, Inc.  All rights reserved.
### SPDX-License-Identifier: BSD-2-Clause
################################################################################

import copy
import logging
import uuid

import requests

from pynsxt_errors import InvalidArgument, NotFound, TransportError, ValidationError
from pynsxt_specs import KIND_GROUP, KIND_TIER0, KIND_TIER1, RemoteObject

logger = logging.getLogger(__name__)

# ============================
# Global error handling
# ============================

STATUS_MESSAGES = {
    301: ('Moved Permanently', "Request must be reissued to a different controller node."),
    307: ('Temporary Redirect', "Request should be reissued to a different controller node."),
    400: ('Bad Request', "Request was improperly formatted or contained an invalid parameter."),
    401: ('Unauthorized', "The client has not authenticated. Check the username and password for this manager."),
    403: ('Forbidden', "The client does not have sufficient privileges to execute the request."),
    404: ('Not Found', "The requested object does not exist."),
    409: ('Conflict', "The request conflicts with configuration on a different entity, or another client modified the same entity."),
    412: ('Precondition Failed', "The _revision sent is out of date; re-fetch the object and try again."),
    500: ('Internal Server Error', "An internal error occurred while executing the request."),
    503: ('Service Unavailable', "The associated resource could not be reached or is temporarily busy."),
}


def nsx_error_handling(fxn_response):
    """Builds the exception matching a failed policy API response."""
    code = fxn_response.status_code
    title, hint = STATUS_MESSAGES.get(code, ('Unknown error', ""))
    lines = [f'Error {code}: "{title}"']
    if hint:
        lines.append(hint)
    try:
        json_response = fxn_response.json()
    except ValueError:
        json_response = {}
    if isinstance(json_response, dict):
        if 'error_message' in json_response:
            lines.append(json_response['error_message'])
        for r in json_response.get('related_errors') or []:
            lines.append(r.get('error_message', ''))
    message = " ".join(line for line in lines if line)

    if code == 400:
        return ValidationError(message, status_code=code)
    if code == 404:
        return NotFound(message, status_code=code)
    return TransportError(message, status_code=code)


# ============================
# Remote collections
# ============================

COLLECTION_PATHS = {
    KIND_GROUP: "/policy/api/v1/infra/domains/{domain}/groups",
    KIND_TIER0: "/policy/api/v1/infra/tier-0s",
    KIND_TIER1: "/policy/api/v1/infra/tier-1s",
}


class NsxCollection:
    """List/get/create/update for one resource kind (and, for groups, one domain) on an NSX-T Manager."""

    def __init__(self, session, kind, domain="default"):
        if kind not in COLLECTION_PATHS:
            raise InvalidArgument(f'Unknown resource kind "{kind}".')
        self.session = session
        self.kind = kind
        self.domain = domain
        self.path = COLLECTION_PATHS[kind].format(domain=domain)

    def __repr__(self):
        return f"NsxCollection({self.kind!r}, {self.path!r})"

    def _call(self, method, path, **kwargs):
        try:
            response = self.session.request(method, path, **kwargs)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}")
        if response.status_code not in (200, 201):
            raise nsx_error_handling(response)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            raise TransportError(f"{method} {path} returned a non-JSON body.", status_code=response.status_code)

    def resource_url(self, remote_id):
        return f"{self.session.base_url}{self.path}/{remote_id}"

    def _remote(self, body):
        return RemoteObject.from_json(self.kind, body, self.resource_url(body["id"]))

    def list(self):
        results = []
        params = {}
        while True:
            json_response = self._call("GET", self.path, params=params)
            results.extend(json_response.get('results') or [])
            cursor = json_response.get('cursor')
            if not cursor:
                break
            params = {"cursor": cursor}
        logger.debug("Listed %d objects from %s", len(results), self.path)
        return [self._remote(r) for r in results]

    def get(self, remote_id):
        return self._remote(self._call("GET", f"{self.path}/{remote_id}"))

    def create(self, spec):
        remote_id = str(uuid.uuid4())
        json_data = spec.to_payload()
        json_data["id"] = remote_id
        logger.debug("PUT %s/%s", self.path, remote_id)
        body = self._call("PUT", f"{self.path}/{remote_id}", json=json_data)
        return self._remote(body or json_data)

    def update(self, remote_id, spec):
        """Replaces every field of an existing object with the spec's values."""
        current = self.get(remote_id)
        json_data = spec.to_payload()
        json_data["id"] = remote_id
        if current.revision is not None:
            json_data["_revision"] = current.revision
        logger.debug("PUT %s/%s (revision %s)", self.path, remote_id, current.revision)
        body = self._call("PUT", f"{self.path}/{remote_id}", json=json_data)
        return self._remote(body or json_data)


class InMemoryCollection:
    """A collection held in a dict, with the same surface as NsxCollection. Records every call."""

    def __init__(self, kind, objects=(), base_url="memory://nsx"):
        self.kind = kind
        self.base_url = base_url
        self.objects = {}
        self.calls = []
        self._ids = 0
        for body in objects:
            body = dict(body)
            body.setdefault("id", self._next_id())
            body.setdefault("_revision", 0)
            self.objects[body["id"]] = body

    def _next_id(self):
        self._ids += 1
        return f"{self.kind}-{self._ids}"

    def _remote(self, body):
        return RemoteObject.from_json(self.kind, copy.deepcopy(body), f"{self.base_url}/{self.kind}/{body['id']}")

    def list(self):
        self.calls.append(("list",))
        return [self._remote(b) for b in self.objects.values()]

    def get(self, remote_id):
        self.calls.append(("get", remote_id))
        if remote_id not in self.objects:
            raise NotFound(f"{remote_id} not found", status_code=404)
        return self._remote(self.objects[remote_id])

    def create(self, spec):
        self.calls.append(("create", spec.name))
        body = spec.to_payload()
        body["id"] = self._next_id()
        body["_revision"] = 0
        self.objects[body["id"]] = body
        return self._remote(body)

    def update(self, remote_id, spec):
        self.calls.append(("update", remote_id))
        if remote_id not in self.objects:
            raise NotFound(f"{remote_id} not found", status_code=404)
        body = spec.to_payload()
        body["id"] = remote_id
        body["_revision"] = self.objects[remote_id].get("_revision", 0) + 1
        self.objects[remote_id] = body
        return self._remote(body)

    @property
    def mutations(self):
        return [c for c in self.calls if c[0] in ("create", "update")]

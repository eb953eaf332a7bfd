# Error classes for pyNSXT

################################################################################
### Copyright (C) 2019-2022 VMware, Inc.  All rights reserved.
### SPDX-License-Identifier: BSD-2-Clause
################################################################################


class NsxtError(Exception):
    """Base class for every error raised by pyNSXT."""


class InvalidArgument(NsxtError):
    """Bad caller input, raised before any call to the NSX-T Manager."""


class CredentialsUnavailable(InvalidArgument):
    """No credentials could be resolved without prompting."""


class TransportError(NsxtError):
    """Network, authentication or remote-side failure."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(TransportError):
    """The NSX-T Manager rejected the request body."""


class NotFound(TransportError):
    """The referenced object no longer exists."""


class NotAvailable(NsxtError):
    """Resource kind or domain is not supported by the connected manager."""


class AmbiguousName(NsxtError):
    """More than one remote object carries the requested display name."""

    def __init__(self, name, remote_ids):
        super().__init__(f'{len(remote_ids)} objects are named "{name}": {", ".join(remote_ids)}')
        self.name = name
        self.remote_ids = list(remote_ids)

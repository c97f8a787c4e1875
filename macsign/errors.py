"""
Error types raised while deciding on and performing code signing.

Every fatal condition of a signing pass is a ``SigningError``. Non-fatal
conditions (unsupported host, no identity available) never raise; they are
recorded as warnings on the pass report instead.
"""

from typing import List, Optional, Sequence


class SigningError(Exception):
    """Base class for fatal signing errors. Aborts the pass that raised it."""


class ConfigError(SigningError):
    """Build configuration is missing or malformed."""


class DeprecatedResourceName(SigningError):
    """A build resource still uses a name that is no longer accepted."""

    def __init__(self, name: str, replacement: str):
        self.name = name
        self.replacement = replacement
        super().__init__(f"{name} is deprecated name, please use {replacement}")


class IdentityDisabledButForced(SigningError):
    def __init__(self):
        super().__init__("identity explicitly is set to null, but forceCodeSigning is set to true")


class IdentityNotFound(SigningError):
    """No usable identity for a pass that must be signed."""


class AmbiguousOrMisconfiguredQualifier(SigningError):
    """An explicit identity qualifier matched nothing, or matched more than one certificate."""

    def __init__(self, qualifier: Optional[str], detail: str):
        self.qualifier = qualifier
        super().__init__(detail)


class InstallerIdentityNotFound(SigningError):
    def __init__(self, cert_type: str):
        self.cert_type = cert_type
        super().__init__(f'Cannot find valid "{cert_type}" identity to sign MAS installer')


class ExternalToolFailure(SigningError):
    """An external tool exited with a non-zero status or timed out."""

    def __init__(self, cmd: Sequence[str], returncode: Optional[int], output: str):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.output = output
        if returncode is None:
            status = "timed out"
        else:
            status = f"exited with code {returncode}"
        message = f"{self.cmd[0]} {status}"
        if output:
            message = f"{message}:\n{output}"
        super().__init__(message)


class PassCrashed(SigningError):
    """A pass stopped on an error from outside the signing pipeline (e.g. an OSError while bundling)."""

    def __init__(self, pass_name: str, cause: Exception):
        self.pass_name = pass_name
        self.cause = cause
        super().__init__(f"{pass_name}: {type(cause).__name__}: {cause}")
        self.__cause__ = cause


class BuildFailed(SigningError):
    """One or more signing passes ended fatally."""

    def __init__(self, errors: List[SigningError]):
        self.errors = errors
        lines = [str(e) for e in errors]
        super().__init__(f"{len(errors)} signing pass(es) failed: " + "; ".join(lines))

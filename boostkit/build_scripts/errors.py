#
# Copyright 2024 boostkit Project Authors. All rights reserved.
# Use of this source code is governed by a MIT-style
# license that can be found at
#
# https://opensource.org/license/MIT
#
# The above copyright notice and this permission
# notice shall be included in all copies or
# substantial portions of the Software.

"""
Errors raised by the build pipeline.

Every error is fatal: the command line reports it together with the stage
that failed and exits with status 1. Nothing is retried.
"""


class BoostKitError(Exception):
    """Base class of every pipeline error"""
    stage = "boostkit"


class ConfigurationError(BoostKitError):
    """Invalid flags, values or configuration file"""
    stage = "resolve"


class MalformedVersionError(ConfigurationError):
    """A version string that is not dot separated numbers"""

    def __init__(self, value, what="version"):
        super().__init__(f"Malformed {what} '{value}', expected e.g. 1.72.0")
        self.value = value


class MissingParameterError(ConfigurationError):
    """A flag was given without its required value"""

    def __init__(self, parameter):
        super().__init__(f"{parameter} requires a parameter")
        self.parameter = parameter


class UnknownParameterError(ConfigurationError):
    """A flag that is not understood"""

    def __init__(self, parameter, value=None):
        if value:
            message = f'Unknown argument "{value}" for parameter {parameter}.'
        else:
            message = f"Unknown argument {parameter}"
        super().__init__(message)
        self.parameter = parameter


class InvalidConfigFileError(ConfigurationError):
    """boostkit.toml exists but cannot be used"""


class AcquisitionError(BoostKitError):
    """Fetching, unpacking or patching the boost sources failed"""
    stage = "acquire"


class DownloadError(AcquisitionError):
    pass


class MissingArchiveError(AcquisitionError):
    pass


class PatchError(AcquisitionError):
    pass


class BuildError(BoostKitError):
    """bootstrap.sh or b2 returned a nonzero exit code"""
    stage = "build"

    def __init__(self, variant, step, log_path=None, detail=""):
        message = f"Error {step} {variant}."
        if log_path:
            message += f" Check log: {log_path}"
        if detail:
            message += f"\n{detail}"
        super().__init__(message)
        self.variant = variant
        self.step = step
        self.log_path = log_path


class MergeError(BoostKitError):
    """Thinning, exploding or re-archiving a static library failed"""
    stage = "merge"


class AssemblyError(BoostKitError):
    """The XCFramework could not be created"""
    stage = "package"

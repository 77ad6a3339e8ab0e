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

"""External command execution for boostkit."""

from .cmd_util import CommandResult, CommandRunner

__all__ = ["CommandResult", "CommandRunner"]

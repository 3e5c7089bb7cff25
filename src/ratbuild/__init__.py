# This file is part of Ratbuild, a tool for assembling a bootable RatOS root filesystem.
#
# Copyright 2025 The Ratbuild Authors.
#
# SPDX-License-Identifier: GPL-3.0-only
#
# Ratbuild is free software: you can redistribute it and/or modify it under
# the terms of the GNU General Public License version 3, as published by the
# Free Software Foundation.
#
# Ratbuild is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranties of MERCHANTABILITY,
# SATISFACTORY QUALITY, or FITNESS FOR A PARTICULAR PURPOSE. See the GNU
# General Public License for more details.
#
# You should have received a copy of the GNU General Public License along with
# Ratbuild. If not, see <http://www.gnu.org/licenses/>.

"""Ratbuild: build orchestration for a minimal bootable RatOS image."""

__version__ = "0.1.0"

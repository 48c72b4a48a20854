# Copyright 2026 The Matrix.org Foundation C.I.C.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# REQUIREMENTS is a simple list of requirement specifiers[1], and must be
# installed. It is passed to setup() as install_requires in setup.py.
#
# CONDITIONAL_REQUIREMENTS is the optional dependencies, represented as a dict
# of lists. The dict key is the optional dependency name and can be passed to
# pip when installing. The list is a series of requirement specifiers[1] to be
# installed when that optional dependency requirement is specified. It is passed
# to setup() as extras_require in setup.py
#
# This file is executed by setup.py, so it must only use the standard library.
#
# [1] https://pip.pypa.io/en/stable/reference/pip_install/#requirement-specifiers.

REQUIREMENTS = [
    "jsonschema>=3.0.0",
    "canonicaljson>=1.4.0",
    # we rely on twisted.logger.STDLibLogObserver and Deferreds being awaitable.
    "Twisted>=21.2.0",
    "treq>=21.1.0",
    "zope.interface>=5.0",
    "pyyaml>=5.1",
    "prometheus_client>=0.4.0",
    # we use attr.s(auto_attribs=True) and attr.evolve.
    "attrs>=19.2.0,!=21.1.0",
    "typing-extensions>=3.10.0",
]

CONDITIONAL_REQUIREMENTS = {
    # test-only dependencies; the tests themselves are run with `trial`, which
    # ships with Twisted.
    "test": ["parameterized>=0.7.0"],
}

ALL_OPTIONAL_REQUIREMENTS = set()

for name, optional_deps in CONDITIONAL_REQUIREMENTS.items():
    ALL_OPTIONAL_REQUIREMENTS = set(optional_deps) | ALL_OPTIONAL_REQUIREMENTS

# ensure there are no double-quote characters in any of the deps (otherwise the
# 'pip install' incantation in error messages will break)
for dep in REQUIREMENTS + list(ALL_OPTIONAL_REQUIREMENTS):
    if '"' in dep:
        raise Exception(
            "Dependency `%s` contains double-quote; use single-quotes instead" % (dep,)
        )
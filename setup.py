#!/usr/bin/env python

# Copyright 2023 The Matrix.org Foundation C.I.C.
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

import os
from setuptools import setup, find_packages, Command


here = os.path.abspath(os.path.dirname(__file__))


# We stick with what appears to be the convention among Twisted projects, and
# don't attempt to do anything when someone runs `setup.py test`; instead we
# direct people to run `trial` directly if they care.
class TestCommand(Command):
    user_options = []

    def initialize_options(self):
        pass

    def finalize_options(self):
        pass

    def run(self):
        print("""The tests cannot be run via setup.py. To run them, try:
     PYTHONPATH="." trial tests
""")


def read_file(path_segments):
    """Read a file from the package. Takes a list of strings to join to
    make the path"""
    file_path = os.path.join(here, *path_segments)
    with open(file_path) as f:
        return f.read()


def exec_file(path_segments):
    """Execute a single python file to get the variables defined in it"""
    result = {}
    code = read_file(path_segments)
    exec(code, result)
    return result


version = exec_file(("matrix_viewer", "__init__.py"))["__version__"]
dependencies = exec_file(("matrix_viewer", "python_dependencies.py"))
long_description = read_file(("README.rst",))

REQUIREMENTS = dependencies['REQUIREMENTS']
CONDITIONAL_REQUIREMENTS = dependencies['CONDITIONAL_REQUIREMENTS']
ALL_OPTIONAL_REQUIREMENTS = dependencies['ALL_OPTIONAL_REQUIREMENTS']

# Make `pip install matrix-viewer[all]` install all the optional dependencies.
CONDITIONAL_REQUIREMENTS["all"] = list(ALL_OPTIONAL_REQUIREMENTS)


setup(
    name="matrix-viewer",
    version=version,
    packages=find_packages(exclude=["tests", "tests.*"]),
    description="Read-only gateway for browsing Matrix rooms without an account",
    install_requires=REQUIREMENTS,
    extras_require=CONDITIONAL_REQUIREMENTS,
    include_package_data=True,
    zip_safe=False,
    long_description=long_description,
    python_requires="~=3.8",
    entry_points={
        "console_scripts": ["matrix-viewer = matrix_viewer.app.gateway:main"]
    },
    cmdclass={'test': TestCommand},
)

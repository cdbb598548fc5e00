#!/usr/bin/env python3
# Copyright 2022 The Sigstore Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import importlib

from setuptools import find_packages, setup

version = importlib.import_module("cosign._version")

with open("./README.md") as f:
    long_description = f.read()

setup(
    name="cosign-python",
    version=version.__version__,
    license="Apache-2.0",
    author="Sigstore Authors",
    author_email="sigstore-dev@googlegroups.com",
    description="A tool for signing and verifying container images and blobs",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/sigstore/cosign-python",
    packages=find_packages(exclude=["test", "test.*"]),
    include_package_data=True,
    entry_points={
        "console_scripts": [
            "cosign = cosign._cli:main",
        ]
    },
    platforms="any",
    python_requires=">=3.9",
    install_requires=[
        "cryptography>=42",
        "pem",
        "pydantic>=2,<3",
        "PyNaCl>=1.5",
        "pyOpenSSL>=23.0.0",
        "rekor-types>=0.0.11",
        "requests",
        "rich~=13.0",
        "securesystemslib",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-cov",
            "pretend",
            "coverage[toml]",
        ],
        "dev": [
            "build",
            "bump",
            "flake8",
            "black",
            "isort",
            "pytest",
            "pytest-cov",
            "pretend",
            "coverage[toml]",
            "interrogate",
            "mypy",
            "types-requests",
            "types-pyOpenSSL",
        ],
    },
    classifiers=[
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Security",
        "Topic :: Security :: Cryptography",
    ],
)

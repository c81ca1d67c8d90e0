# Copyright 2022 Akamai Technologies, Inc
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

from pathlib import Path

from setuptools import find_packages, setup

setup(
    name="bridgecheck",
    version="0.1",
    description="Conformance-testing harness for bridging HTTP reverse proxies",
    long_description=Path(__file__).parent.joinpath("README.rst").read_text("utf-8"),
    long_description_content_type="text/x-rst",
    license="Apache License 2.0",
    keywords=[
        "HTTP",
        "HTTP/2",
        "proxy",
        "reverse proxy",
        "conformance",
        "testing",
        "AnyIO",
        "asyncio",
        "Trio",
    ],
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Console",
        "Framework :: AnyIO",
        "Framework :: AsyncIO",
        "Framework :: Pytest",
        "Framework :: Trio",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: POSIX",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: Implementation :: CPython",
        "Topic :: Internet :: WWW/HTTP",
        "Topic :: Internet :: Proxy Servers",
        "Topic :: Software Development :: Testing",
        "Topic :: System :: Networking",
        "Typing :: Typed",
    ],
    package_dir={"": "src"},
    packages=find_packages("src"),
    python_requires=">=3.8",
    install_requires=[
        "anyio",
        "h11",
        "h2",
    ],
    extras_require={
        "all": [
            "anyio[trio]",
            "uvloop",
        ],
        "trio": [
            "anyio[trio]",
        ],
        "uvloop": [
            "uvloop",
        ],
        "dev": [
            "black",
            "flake8",
            "isort",
            "pytest",
            "mypy>=0.981",
        ],
    },
    entry_points={
        "console_scripts": [
            "bridgecheck = bridgecheck.cli:run",
        ]
    },
    include_package_data=True,
    zip_safe=False,
)

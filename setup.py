# -*- coding: utf-8 -*-

import os.path

import setuptools


def readme():
    """Load README contents."""
    path = os.path.join(os.path.dirname(__file__), "README.rst")
    with open(path) as readme:
        return readme.read()


def version():
    """Read the version from the package without importing it."""
    path = os.path.join(os.path.dirname(__file__), "rconlink", "__init__.py")
    with open(path) as init:
        for line in init:
            if line.startswith("__version__"):
                return line.split("=")[1].strip().strip("\"'")
    raise RuntimeError("Unable to find version string")


setuptools.setup(
    name="python-rconlink",
    version=version(),
    description=("Reconnecting client and interactive shell for the Source "
                 "remote console (RCON) protocol."),
    long_description=readme(),
    packages=setuptools.find_packages(exclude=["tests"]),
    python_requires=">=3.6",
    install_requires=[
        "docopt>=0.6.2",
    ],
    extras_require={
        "development": [
            "pylint",
        ],
        "test": [
            "pytest>=3.6.0",
            "pytest-cov",
            "pytest-timeout",
        ],
        "docs": [
            "sphinx",
            "sphinx_rtd_theme",
        ],
    },
    entry_points={
        "console_scripts": [
            "rconlink = rconlink.shell:_main",
        ],
    },
    license="MIT License",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: Implementation :: CPython",
        "Programming Language :: Python :: Implementation :: PyPy",
        "Topic :: Games/Entertainment",
    ],
)

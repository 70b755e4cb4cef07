#!/usr/bin/env python

"""The setup script."""

from setuptools import setup, find_packages

with open("README.rst") as readme_file:
    readme = readme_file.read()

with open("HISTORY.rst") as history_file:
    history = history_file.read()

requirements = ["pefile>=2023.2.7"]

test_requirements = [
    "pytest>=7",
    "isort>=5.10.1",
    "pycodestyle>=2.8.0",
    "mypy>=0.950",
]

setup(
    author="MalwareFrank",
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Natural Language :: English",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    description="Inspect the CLR header, metadata tables and entry point of .NET executable files.",
    entry_points={
        "console_scripts": [
            "dnmeta=dnmeta.cli:main",
        ],
    },
    install_requires=requirements,
    license="MIT license",
    long_description=readme + "\n\n" + history,
    include_package_data=True,
    keywords="dnmeta dotnet metadata pe",
    name="dnmeta",
    packages=find_packages(where="src", include=["dnmeta", "dnmeta.*"]),
    package_dir={"": "src"},
    package_data={"dnmeta": ["py.typed"]},
    test_suite="tests",
    tests_require=test_requirements,
    extras_require={'test': test_requirements},
    version="0.1.0",
    zip_safe=False,
)

#!/usr/bin/env python3

import os
from setuptools import setup, find_packages

here = os.path.abspath(os.path.dirname(__file__))

readme_path = os.path.join(here, "README.md")
with open(readme_path, encoding="utf-8") as f:
    long_description = f.read()

version_path = os.path.join(here, "funlocal", "version.py")
version_dict = {}
with open(version_path) as f:
    exec(f.read(), version_dict)
__version__ = version_dict.get("__version__", "0.1.0")

# Core requirements
install_requires = []
req_path = os.path.join(here, "requirements.txt")
if os.path.exists(req_path):
    with open(req_path, encoding="utf-8") as f:
        install_requires = [
            line.strip() for line in f if not line.startswith("#") and line.strip()
        ]
else:
    # Define core requirements manually if file not found
    install_requires = [
        "docker>=4.2.0",
        "click>=7.1.2",
        "rich",
    ]

extras_require = {"test": ["pytest"]}

setup(
    name="funlocal",
    version=__version__,
    description="Local execution engine for Function Compute functions",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.7",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Software Development :: Testing",
        "Topic :: System :: Distributed Computing",
    ],
    keywords="serverless, faas, docker, function-compute, local-development",
    packages=find_packages(where=here, exclude=["tests", "tests.*"]),
    python_requires=">=3.7",
    install_requires=install_requires,
    extras_require=extras_require,
)

"""
setup.py - Project Setup

  pip install -e .            engine, device service and client
  pip install -e ".[test]"    + test runner

Console scripts:
  heartid-server   start the device service
  heartid          client CLI (enroll / auth / status / reset / logs / redeem)
"""

from setuptools import setup, find_packages

REQUIREMENTS = [
    "flask>=2.3",
    "cryptography>=41.0",
    "PyJWT>=2.8",
    "numpy>=1.24",
    "requests>=2.31",
]

setup(
    name="heartid",
    version="1.0.0",
    description="Heart-rate pattern biometric authentication engine and device service",
    python_requires=">=3.10",
    packages=find_packages(exclude=("tests", "tests.*")),
    install_requires=REQUIREMENTS,
    extras_require={"test": ["pytest>=7.0"]},
    entry_points={
        "console_scripts": [
            "heartid-server=heartid_server.api:main",
            "heartid=heartid_client.client_app:main",
        ],
    },
)

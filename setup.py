import os

from setuptools import find_packages, setup


# read the version from the VERSION file
def get_version():
    with open(os.path.join(os.path.dirname(__file__), "VERSION"), "r") as version_file:
        return version_file.read().strip()


# Set the version in the stackswap/version.py file
def set_version_constant(version: str):
    with open(
        os.path.join(os.path.dirname(__file__), "stackswap-core", "stackswap", "version.py"), "w"
    ) as version_file:
        version_file.write(f'__version__ = "{version}"\n')


version = get_version()
set_version_constant(version)

setup(
    name="stackswap",
    version=version,
    description="Hotswap deployments for CloudFormation stacks, short-circuiting CloudFormation where possible",
    python_requires=">=3.10",
    package_dir={"": "stackswap-core"},
    packages=find_packages(where="stackswap-core"),
    install_requires=[
        "boto3>=1.34",
        "botocore>=1.34",
        "plux>=1.10",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "moto[stepfunctions]>=5.0",
        ],
    },
    entry_points={
        # further hotswap detectors register here, keyed by the CloudFormation resource type
        "stackswap.hotswap.detectors": [],
    },
)

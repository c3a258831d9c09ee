"""
Onchain Eligibility Engine - Setup Configuration
Multi-chain airdrop eligibility scoring with MEV, liquidity and wallet risk signals
"""

from setuptools import setup, find_packages
import os

# Read the README file
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Read requirements
def read_requirements(file):
    """Read requirements from file"""
    if os.path.exists(file):
        with open(file, 'r') as f:
            return [line.strip() for line in f if line.strip() and not line.startswith('#')]
    return []

setup(
    name="onchain-eligibility-engine",
    version="1.0.0",
    author="Onchain Eligibility Team",
    description="Multi-chain airdrop eligibility scoring engine with MEV and liquidity analysis",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
        "Framework :: AsyncIO",
    ],
    packages=find_packages(exclude=["tests*", "docs*"]),
    py_modules=["main"],
    python_requires=">=3.11",
    install_requires=read_requirements("requirements.txt"),
    extras_require={
        "dev": read_requirements("test-requirements.txt"),
    },
    entry_points={
        "console_scripts": [
            "eligibility=main:main",
        ],
    },
    include_package_data=True,
    package_data={
        "config": ["*.yaml"],
    },
    zip_safe=False,
    keywords=[
        "airdrop", "eligibility", "cryptocurrency", "dex", "defi",
        "ethereum", "bsc", "polygon", "arbitrum", "base",
        "mev", "web3"
    ],
)

# setup.py
from setuptools import setup, find_packages

setup(
    name="smartledger",
    version="0.1.0",
    description="A personal finance ledger with savings goals, budgets and recurring bills",
    author="Your Name",
    author_email="you@example.com",
    url="https://github.com/yourusername/smartledger",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "click>=8.0",
        "pyyaml>=5.3",
        "python-dotenv>=0.19",
        "huggingface_hub>=0.24",
        "mcp>=1.2,<2",
        "anyio>=3.7",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "smartledger=ledger_tracker.cli:main",
            "smartledger-mcp=ledger_tracker.mcp_server:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)

"""
Setup script for AKS VM Sizer CLI.
"""
from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="aks-vm-sizer",
    version="1.0.0",
    author="Platform Team",
    author_email="platform@example.com",
    description="Quota-aware Azure VM size finder for AKS node pools",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/your-org/aks-vm-sizer",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main", "config", "azure_client", "constraint_validator", "analysis_engine", "report_exporter"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Systems Administration",
        "Topic :: Utilities",
    ],
    python_requires=">=3.9",
    install_requires=[
        "typer[all]>=0.9.0",
        "rich>=13.7.0",
        "azure-core>=1.29.0",
        "azure-identity>=1.15.0",
        "azure-mgmt-compute>=30.0.0",
        "azure-mgmt-subscription>=3.1.1",
        "python-dotenv>=1.0.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "ruff>=0.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "vm-sizer=main:main",
        ],
    },
    keywords=[
        "azure",
        "aks",
        "vm",
        "quota",
        "sku",
        "cli",
    ],
)

"""
Packaging for the fleet kernel.
"""
from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""

setup(
    name="fleet-kernel",
    version="0.1.0",
    description="Fleet kernel: network discovery, capacity-aware placement and purchased-node management",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["fleet_kernel", "fleet_kernel.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Distributed Computing",
    ],
    python_requires=">=3.9",
    install_requires=[
        "pyyaml>=6.0",
        "pydantic>=2.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
            "numpy>=1.24.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "fleet-kernel=fleet_kernel.cli:main",
            "fleet-kerneld=fleet_kernel.daemon:main",
        ],
    },
)

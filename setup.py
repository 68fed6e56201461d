"""
Setup script for focusrank package
"""

from setuptools import find_packages, setup


with open("requirements.txt") as f:
    requirements = [line.strip() for line in f if line.strip() and not line.startswith("#")]

setup(
    name="focusrank",
    version="0.1.0",
    description="Hybrid retrieval and ranking engine for productivity summary chunks",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.4",
            "freezegun>=1.2",
        ],
        "rerank": [
            "sentence-transformers>=2.2",
        ],
    },
    entry_points={
        "console_scripts": [
            "focusrank=focusrank.cli:main",
        ],
    },
    include_package_data=True,
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)

"""Setup script for restoid."""

from setuptools import setup, find_packages

setup(
    name="restoid",
    version="1.0.0",
    description="Android app backup and restore with restic",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "PyYAML>=6.0",
        "tqdm>=4.64.0"
    ],
    extras_require={
        'test': ['pytest>=7.0']
    },
    entry_points={
        "console_scripts": [
            "restoid=restoid.main:main",
        ],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "Operating System :: Android",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)

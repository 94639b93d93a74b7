from pathlib import Path

from setuptools import find_packages, setup

cwd = Path(__file__).parent
description_file = cwd / "README.md"
if description_file.is_file():
    long_description = description_file.read_text()
else:
    long_description = ""

setup(
    name="branchtrace",
    version="0.1.0",
    description="Numerical continuation of branches of solutions with bifurcation detection and deflation",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=["numpy", "scipy", "matplotlib", "numdifftools"],
    extras_require={
        "test": ["pytest"],
        "dev": ["pytest", "ruff", "mypy"],
    },
)

"""Setup file for lderp directory client"""

from setuptools import find_packages, setup


setup(
    name="lderp",
    version="0.1.0",
    packages=find_packages(exclude=("tests", "tests.*")),
    install_requires=["addict", "ldap3", "pyyaml"],
    extras_require={
        "dev": [
            "pre-commit",
            "pylint",
            "pytest",
            "pytest-cov",
            "pytest-mock",
            "pytest-pylint",
            "black",
        ],
    },
    python_requires=">=3.9",
    package_dir={"lderp": "lderp"},
    entry_points={
        "console_scripts": [
            "lderp = lderp.cli:main",
        ],
    },
)

from setuptools import setup, find_packages

setup(
    name="telescope_reco",
    version="0.1.0",
    description="Truth-matched track fitting and residual validation for a telescope detector",
    author="Your Name",
    author_email="your.email@example.com",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.10",
    install_requires=[
        # Runtime dependencies
        "numpy",
        "numba",
        "pandas",
        "matplotlib",
        "scipy",
        "orjson",
    ],
    extras_require={
        # Developer extras
        "dev": [
            "pytest",
            "black",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            "telescope-reco=telescope_reco.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)

from setuptools import setup, find_packages

setup(
    name="cargomon",
    version="0.1.0",
    description="Watch a Cargo project, rebuild it on change and restart the program",
    author="Cargomon Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    python_requires=">=3.11",
    install_requires=[
        "watchdog",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "cargomon=cargomon.main:main",
        ],
    },
)

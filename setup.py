from setuptools import setup, find_namespace_packages

setup(
    name="svcenv",
    version="0.1.0",
    packages=find_namespace_packages(where="src", include=["svcenv", "svcenv.*"]),
    package_dir={"": "src"},
    install_requires=[
        "pydantic>=2.0",
        "pyyaml>=6.0",
        "click>=8.0",
        "tenacity>=8.0",
        "python-dotenv>=1.0",
        "testcontainers>=4.0",
        "docker>=6.0",
        "kafka-python>=2.0.2",
        "requests>=2.28",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "svcenv=svcenv.CLI.main:main",
        ],
        "pytest11": [
            "svcenv=svcenv.pytest_plugin",
        ],
    },
)

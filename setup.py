from setuptools import setup, find_namespace_packages

setup(
    name="socialrelay",
    version="0.1.0",
    packages=find_namespace_packages(include=["relay", "relay.*"]),
    python_requires=">=3.11",
    install_requires=[
        "httpx>=0.27",
        "pydantic>=2.7",
        "pydantic-settings>=2.7",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
)

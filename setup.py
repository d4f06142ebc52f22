from setuptools import setup, find_namespace_packages

setup(
    name="plugin-relay",
    version="0.1.0",
    packages=find_namespace_packages(include=["relay", "relay.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "httpx>=0.27",
        "pydantic>=2.6",
        "pydantic-settings>=2.3",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "respx>=0.21",
        ],
    },
)

from setuptools import setup, find_namespace_packages

setup(
    name="fairline",
    version="0.1.0",
    packages=find_namespace_packages(include=["fairline", "fairline.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "cryptography>=42.0",
        "PyJWT>=2.8",
        "httpx>=0.26",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
)

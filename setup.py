from setuptools import setup, find_packages

setup(
    name="abouttown",
    version="1.0.0",
    packages=find_packages(include=["abouttown", "abouttown.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "pydantic>=2.5",
        "pydantic-settings>=2.7",
        "httpx>=0.27",
        "redis>=5.0",
        "uvicorn>=0.29",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "httpx>=0.27",
            "respx>=0.21",
        ],
    },
)

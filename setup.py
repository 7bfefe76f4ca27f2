from setuptools import setup, find_packages

setup(
    name="gnunet-client",
    version="0.1.0",
    description="Asynchronous client for the identity and cadet services of a GNUnet peer",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*", "scripts"]),
    install_requires=[
        "python-dotenv>=1.0.0",
        "PyNaCl>=1.5.0",
        "ecdsa>=0.18.0",
        "msgpack>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    python_requires=">=3.10",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
)

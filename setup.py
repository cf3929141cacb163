from setuptools import setup, find_packages


setup(
    name="profilevault",
    version="0.1",
    packages=find_packages(include=["profilevault", "profilevault.*"]),
    description="Password-protected, tamper-evident backups of a directory tree (scrypt + XChaCha20-Poly1305).",
    author="profilevault contributors",
    python_requires=">=3.8",
    install_requires=[
        "pycryptodomex>=3.23.0",
    ],
    entry_points={
        "console_scripts": [
            "profilevault=profilevault.cli:main",
        ]
    },
)

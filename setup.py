from setuptools import setup, find_packages


setup(
    name="ustar",
    version="0.1",
    packages=find_packages(include=["ustar", "ustar.*"]),
    description="A minimal streaming engine for POSIX USTAR (tar) archives over pluggable byte streams.",
    author="vercingetorx",
    install_requires=[],
    entry_points={
        "console_scripts": [
            "ustar=ustar.cli:main",
        ]
    },
)

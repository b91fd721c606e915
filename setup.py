from setuptools import setup, find_packages

setup(
    name="radioflasher",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=[
        "requests",
        "urllib3",
        "rich",
        "tqdm",
        "argcomplete",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "radioflasher=radioflasher.main:main",
        ],
    },
    package_data={
        "radioflasher": ["data/*.json"],
    },
    author="Henrik Olsson",
    author_email="henols@gmail.com",
    description="Radio (modem) firmware catalog and flashing tool for OnePlus devices",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    url="https://github.com/henols/radioflasher",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
)

from setuptools import setup, find_packages

setup(
    name="s3backup",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "boto3",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        'console_scripts': [
            'backup-to-s3=s3backup.cli:main',
            'capture-logs=s3backup.capture:main',
        ],
    },
)

from setuptools import setup, find_packages

setup(
    name="strava_calendar_sync",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "google-auth",
        "google-auth-oauthlib",
        "google-auth-httplib2",
        "google-api-python-client",
        "requests",
        "icalendar",
        "python-dateutil",
        "boto3",
        "botocore",
    ],
    extras_require={
        "test": [
            "pytest",
            "httplib2",
            "responses",
            "moto[secretsmanager]",
        ],
    },
    entry_points={
        "console_scripts": [
            "strava-sync=strava_calendar_sync.cli:run",
        ],
    },
)

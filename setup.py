from setuptools import setup, find_packages

setup(
    name='django_css_coverage',
    version='0.1.0',
    description='A Django app that reports how much of a page\'s CSS is actually used.',
    author='Your Name',
    author_email='your.email@example.com',
    packages=find_packages(),
    include_package_data=True,
    install_requires=[
        'Django>=3.2',
        'requests>=2.25',
        'celery>=5.0',
    ],
    extras_require={
        'test': [
            'pytest>=7.0',
            'pytest-django>=4.5',
        ],
    },
    classifiers=[
        'Framework :: Django',
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
)

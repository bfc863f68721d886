import nox


@nox.session(python="3.10")
def tests(session):
    session.install(".[test]")
    session.run("pytest", "--cov", "--cov-append", "--cov-branch", "--cov-report=")
    session.run("coverage", "report")
    session.run("coverage", "html")

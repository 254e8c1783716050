from rich import print

from xjposs_py.oss import XjpOssApi
from xjposs_py.oss.inner import OssUser
from xjposs_py.app.account import AuthState


def password_login(auth_state: AuthState, username: str, password: str) -> OssUser:
    user = auth_state.login(username, password)
    print(f"[green]Logged in as[/green] [b]{user.username}[/b]")
    return user


def logout(auth_state: AuthState):
    auth_state.logout()
    print("[yellow]Logged out[/yellow]")


def check_token(api: XjpOssApi, token: str) -> bool:
    valid = api.verify_token(token)
    if valid:
        print("[green]The token is valid[/green]")
    else:
        print("[red]The token is invalid[/red]")
    return valid

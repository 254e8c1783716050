from xjposs_py.oss import XjpOssApi
from xjposs_py.commands.display import display_user_info


def show_user_info(api: XjpOssApi):
    user_info = api.current_user()
    display_user_info(user_info, credential=api.credential)

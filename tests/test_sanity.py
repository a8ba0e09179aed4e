"""最小化测试：验证包能被导入。"""
# @file purpose: Minimal smoke test.


def test_imports() -> None:
    import distro_ops.actions.impl as impl  # noqa: F401
    import distro_ops.core.controller.gate as gate  # noqa: F401
    import distro_ops.core.settings as settings  # noqa: F401
    import distro_ops.io.backend as backend  # noqa: F401

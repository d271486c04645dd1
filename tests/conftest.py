"""全局测试配置：确保所有测试在测试模式下运行。"""

import os

# 在任何模块导入之前设置，防止 coinmeter.main 启动后台任务；
# 会话令牌密钥和配置加密密钥在模块导入时读取，所有测试文件共用同一组值。
os.environ["TESTING"] = "1"
os.environ["AUTH_JWT_SECRET"] = "test-secret-key-for-session-tokens"
os.environ["SETTINGS_SECRET"] = "test-settings-secret"

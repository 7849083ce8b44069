"""Browser control page for the remote login relay, served at ``/auth/remote-login``."""

RELAY_PAGE_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8"/>
<meta name="viewport" content="width=device-width,initial-scale=1"/>
<title>Remote Browser Login</title>
<style>
  body{background:#111;color:#ddd;font-family:system-ui,sans-serif;margin:0;padding:16px;
       display:flex;flex-direction:column;align-items:center;gap:10px}
  .bar{width:100%;max-width:900px;display:flex;gap:8px;align-items:center;flex-wrap:wrap}
  #status{flex:1}
  #timer{color:#888;font-size:.85rem}
  button{background:#2563eb;color:#fff;border:0;border-radius:6px;padding:7px 14px;cursor:pointer}
  button.stop{background:#dc2626}
  button.key{background:#374151}
  #text{flex:1;min-width:180px;background:#1e1e1e;color:#ddd;border:1px solid #444;border-radius:6px;padding:7px}
  #screen{width:100%;max-width:900px;background:#000;border:1px solid #333;border-radius:6px;cursor:crosshair;min-height:200px}
</style>
</head>
<body>
<h2>Remote Browser Login</h2>
<div class="bar">
  <span id="status">Click "Start Login" to open the browser.</span>
  <span id="timer"></span>
  <button id="start">Start Login</button>
  <button id="stop" class="stop">Stop</button>
</div>
<div class="bar">
  <input id="text" placeholder="Type text, then Send"/>
  <button id="send">Send</button>
  <button class="key" data-key="Enter">Enter</button>
  <button class="key" data-key="Tab">Tab</button>
  <button class="key" data-key="Backspace">Backspace</button>
  <button class="key" data-key="Escape">Esc</button>
</div>
<img id="screen" alt=""/>
<script>
let ws = null;
let meta = null;
const $ = (id) => document.getElementById(id);

function send(msg) {
  if (ws && ws.readyState === WebSocket.OPEN) ws.send(JSON.stringify(msg));
}

function connect() {
  const proto = location.protocol === "https:" ? "wss" : "ws";
  ws = new WebSocket(`${proto}://${location.host}/auth/remote-login/ws`);
  ws.onmessage = (ev) => {
    const msg = JSON.parse(ev.data);
    if (msg.type === "frame") {
      $("screen").src = "data:image/jpeg;base64," + msg.data;
      meta = msg.metadata;
    } else {
      $("status").textContent = msg.type === "success" ? "Login successful! Cookies captured." : msg.message || msg.type;
    }
  };
}

async function poll() {
  const res = await fetch("/auth/remote-login/status");
  const s = await res.json();
  $("status").textContent = s.message;
  $("timer").textContent = s.status === "running" ? Math.ceil(s.remainingMs / 1000) + "s left" : "";
  if (s.status === "running" && !ws) connect();
  if (s.status !== "running" && ws) { ws.close(); ws = null; }
}

$("start").onclick = async () => {
  const res = await fetch("/auth/remote-login/start", {method: "POST"});
  const body = await res.json();
  $("status").textContent = body.message || body.error;
  poll();
};
$("stop").onclick = async () => { await fetch("/auth/remote-login/stop", {method: "POST"}); poll(); };
$("send").onclick = () => { send({type: "type", text: $("text").value}); $("text").value = ""; };
document.querySelectorAll("button.key").forEach((b) => {
  b.onclick = () => send({type: "keydown", key: b.dataset.key});
});
$("screen").onclick = (ev) => {
  const img = ev.currentTarget;
  const rect = img.getBoundingClientRect();
  const width = meta && meta.deviceWidth ? meta.deviceWidth : img.naturalWidth;
  const height = meta && meta.deviceHeight ? meta.deviceHeight : img.naturalHeight;
  send({
    type: "click",
    x: Math.round((ev.clientX - rect.left) * width / rect.width),
    y: Math.round((ev.clientY - rect.top) * height / rect.height),
  });
};

poll();
setInterval(poll, 1000);
</script>
</body>
</html>
"""

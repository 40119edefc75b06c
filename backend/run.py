from crashgame import create_app, socketio

app = create_app()

if __name__ == '__main__':
    # The reloader would start a second round engine in the child process
    socketio.run(app, debug=True, use_reloader=False)
